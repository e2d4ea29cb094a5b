from app.rukem import create_app

app = create_app()
