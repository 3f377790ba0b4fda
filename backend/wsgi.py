# backend/wsgi.py
from grid_manager import create_app

app = create_app()
