# backend/wsgi.py
from bookstack import create_app

app = create_app()
