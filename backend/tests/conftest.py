"""Point settings at throwaway values before any waitlist module is imported."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["CONFIRMATION_TOKEN_SECRET"] = "test-secret"
os.environ["PUBLIC_BASE_URL"] = "https://book.test"
os.environ["ADMIN_API_KEY"] = ""
os.environ["CRON_API_KEY"] = ""
os.environ["TRIGGER_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["SMTP_USER"] = ""
os.environ["DISABLE_INTERNAL_SCHEDULER"] = "true"
