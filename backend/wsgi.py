# backend/wsgi.py
from optistore import create_app

app = create_app()
