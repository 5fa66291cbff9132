from app.biohost import create_app

app = create_app()
