# backend/wsgi.py
from tabkeeper import create_app

app = create_app()
