#!/usr/bin/env python3
"""
BurnVault - One-time password sharing
Main entry point for the web application.
"""
import os
import logging
import argparse
from dotenv import load_dotenv

from crypto_utils import CryptoUtils
from storage import Storage
from ledger import Ledger
from lifecycle import SecretLifecycle
from mailer import Mailer
from utils import PendingLoginStore
from vault import SecretVault
from handlers import WebHandlers, create_app

def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')

def main():
    """Main function to start the web server."""
    # Load environment variables
    load_dotenv()

    # Configure logging
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=logging.INFO,
        handlers=[
            logging.FileHandler(os.getenv('LOG_FILE', 'burnvault.log')),
            logging.StreamHandler()
        ]
    )
    logger = logging.getLogger(__name__)

    # Parse command line arguments
    parser = argparse.ArgumentParser(description='BurnVault - One-time password sharing')
    parser.add_argument('--init-db', action='store_true', help='Initialize the database')
    args = parser.parse_args()

    # Get configuration from environment
    secret_key = os.getenv('SECRET_KEY')
    server_pepper = os.getenv('SERVER_PEPPER')
    db_path = os.getenv('DB_PATH', './burnvault.db')
    base_url = os.getenv('BASE_URL', 'http://localhost:3000')
    host = os.getenv('HOST', '0.0.0.0')
    port = int(os.getenv('PORT', '3000'))
    otp_timeout = int(os.getenv('OTP_TIMEOUT', '600'))
    otp_max_attempts = int(os.getenv('OTP_MAX_ATTEMPTS', '5'))
    session_timeout = int(os.getenv('SESSION_TIMEOUT', '86400'))
    page_size = int(os.getenv('PAGE_SIZE', '10'))

    # Initialize the database if requested
    storage = Storage(db_path)
    if args.init_db:
        storage.init_db()
        logger.info("Database initialized successfully")
        return

    # Validate required environment variables
    if not secret_key:
        logger.error("SECRET_KEY environment variable is required")
        return

    if not server_pepper:
        logger.error("SERVER_PEPPER environment variable is required")
        return

    # Initialize components
    crypto = CryptoUtils(server_pepper)
    mailer = Mailer(
        host=os.getenv('SMTP_HOST'),
        port=int(os.getenv('SMTP_PORT', '587')),
        user=os.getenv('SMTP_USER'),
        password=os.getenv('SMTP_PASS'),
        from_addr=os.getenv('SMTP_FROM'),
        use_tls=_env_flag('SMTP_USE_TLS', 'true')
    )
    if not mailer.enabled:
        logger.warning("SMTP_HOST is not set, emails will only be logged")

    lifecycle = SecretLifecycle(SecretVault(), Ledger(storage), mailer, base_url)
    pending_logins = PendingLoginStore(otp_timeout, otp_max_attempts)

    handlers = WebHandlers(
        lifecycle, storage, crypto, mailer, pending_logins,
        admin_email=os.getenv('ADMIN_EMAIL'),
        page_size=page_size,
        allow_anonymous=_env_flag('ALLOW_ANONYMOUS')
    )
    app = create_app(
        handlers, secret_key,
        session_timeout=session_timeout,
        secure_cookies=os.getenv('ENV') == 'production'
    )

    # Start the server
    logger.info("Starting BurnVault on %s:%s", host, port)
    app.run(host=host, port=port, threaded=True)

if __name__ == '__main__':
    main()
