import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./vendpay.db")

# Base URL of the device gateway; unset means every device with a machine number is online
DEVICE_GATEWAY_URL = os.getenv("DEVICE_GATEWAY_URL")
DEVICE_CHECK_TIMEOUT = float(os.getenv("DEVICE_CHECK_TIMEOUT", "5"))

ORDER_NO_PREFIX = os.getenv("ORDER_NO_PREFIX", "ORD")

# Merchant key for callback signatures; unset means only presence is checked
CALLBACK_SIGN_KEY = os.getenv("CALLBACK_SIGN_KEY")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")
