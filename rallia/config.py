import os
from dotenv import load_dotenv

from rallia.constants import CertificationConstants, RequestConstants

load_dotenv()

class Config:
    """Rating engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///rallia.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    DB_RETRY_ATTEMPTS = int(os.getenv('DB_RETRY_ATTEMPTS', 3))

    # Certification criteria
    CERTIFICATION_REQUIRED_REFERENCES = int(os.getenv('CERTIFICATION_REQUIRED_REFERENCES', CertificationConstants.DEFAULT_REQUIRED_REFERENCES))
    CERTIFICATION_REQUIRED_PROOFS = int(os.getenv('CERTIFICATION_REQUIRED_PROOFS', CertificationConstants.DEFAULT_REQUIRED_PROOFS))

    # Request settings
    REFERENCE_REQUEST_EXPIRY_DAYS = int(os.getenv('REFERENCE_REQUEST_EXPIRY_DAYS', RequestConstants.DEFAULT_EXPIRY_DAYS))
    PEER_RATING_REQUEST_EXPIRY_DAYS = int(os.getenv('PEER_RATING_REQUEST_EXPIRY_DAYS', RequestConstants.DEFAULT_EXPIRY_DAYS))

    # Peer evaluation settings
    PEER_EVALUATION_WINDOW = int(os.getenv('PEER_EVALUATION_WINDOW', 5))             # Most recent evaluations averaged
    PEER_EVALUATION_EXTREME_DELTA = float(os.getenv('PEER_EVALUATION_EXTREME_DELTA', 1.0))  # Outliers vs declared level
    PEER_DISPUTE_DELTA = float(os.getenv('PEER_DISPUTE_DELTA', 0.5))                 # Average this far below flags review

    @classmethod
    def get_async_database_url(cls) -> str:
        """Get the database URL with an async driver"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        elif database_url == 'sqlite://':
            database_url = 'sqlite+aiosqlite://'
        elif database_url.startswith('postgresql://'):
            database_url = database_url.replace('postgresql://', 'postgresql+asyncpg://')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that configuration values are usable"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if cls.CERTIFICATION_REQUIRED_REFERENCES <= 0:
            raise ValueError("CERTIFICATION_REQUIRED_REFERENCES must be positive")
        if cls.CERTIFICATION_REQUIRED_PROOFS <= 0:
            raise ValueError("CERTIFICATION_REQUIRED_PROOFS must be positive")
        if cls.REFERENCE_REQUEST_EXPIRY_DAYS <= 0 or cls.PEER_RATING_REQUEST_EXPIRY_DAYS <= 0:
            raise ValueError("Request expiry windows must be positive")
        if cls.PEER_EVALUATION_WINDOW <= 0:
            raise ValueError("PEER_EVALUATION_WINDOW must be positive")
        if cls.DB_RETRY_ATTEMPTS <= 0:
            raise ValueError("DB_RETRY_ATTEMPTS must be positive")
