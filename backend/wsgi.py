# backend/wsgi.py
from brewops import create_app

app = create_app()
