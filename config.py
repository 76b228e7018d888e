import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

ADMIN_KEY = os.getenv("ADMIN_API_KEY")

# Path to Firebase service account JSON
FIREBASE_CRED_PATH = os.getenv("FIREBASE_CRED_JSON", "./firebase-adminsdk.json")
FIREBASE_DB_URL = os.getenv("FIREBASE_DB_URL", "")

# Frontend origins allowed by CORS, comma separated
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Flat shipping fee in yen added to every order
SHIPPING_FEE = int(os.getenv("SHIPPING_FEE", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
