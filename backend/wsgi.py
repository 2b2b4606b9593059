# backend/wsgi.py
from osso import create_app

app = create_app()
