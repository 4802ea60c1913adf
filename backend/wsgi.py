# backend/wsgi.py
from kantin import create_app

app = create_app()
