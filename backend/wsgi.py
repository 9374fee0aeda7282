# backend/wsgi.py
from venue_auth import create_app

app = create_app()
