import os
from dotenv import load_dotenv

load_dotenv()

# Google AI configuration
# Optional at import; required on the first backend call
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")

# Model selection
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "gemini-2.5-pro")
AVAILABLE_MODELS = ["gemini-2.5-pro", "gemini-2.5-flash"]

# Lesson persona
SUBJECT_DOMAIN = os.getenv("SUBJECT_DOMAIN", "radiology")
LESSON_AUDIENCE = os.getenv("LESSON_AUDIENCE", "experienced radiologists")
MIN_SECTIONS = 5
MAX_SECTIONS = 7

# Lesson generation configuration
LESSON_TEMPERATURE = 0.6
LESSON_TOP_P = 0.9
LESSON_TOP_K = 40

# Follow-up chat configuration
CHAT_TEMPERATURE = 0.7
ANSWER_CONTEXT_CHARS = 500
SECTION_CONTEXT_CHARS = 800

# Logging configuration
LOG_DIR = os.getenv("LOG_DIR", "./logs")

# API configuration
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",")]
