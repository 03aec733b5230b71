# backend/wsgi.py
from floradesk import create_app

app = create_app()
