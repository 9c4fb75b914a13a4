import os

class Config:
    MYSQL_USER = os.getenv('MYSQL_USER', 'root')
    MYSQL_PASSWORD = os.getenv('MYSQL_PASSWORD', 'root123')
    MYSQL_HOST = os.getenv('MYSQL_HOST', 'localhost')
    MYSQL_DB = os.getenv('MYSQL_DB', 'transaction_db')
    MYSQL_PORT = int(os.getenv('MYSQL_PORT', 3306))
    MYSQL_CURSORCLASS = 'DictCursor'
    REPORT_YEAR = int(os.getenv('REPORT_YEAR', 2022))
    DEFAULT_PER_PAGE = int(os.getenv('DEFAULT_PER_PAGE', 10))
    MAX_PER_PAGE = int(os.getenv('MAX_PER_PAGE', 100))
    COMBINED_WORKERS = int(os.getenv('COMBINED_WORKERS', 4))
    SEED_URL = os.getenv('SEED_URL', 'https://s3.amazonaws.com/roxiler.com/product_transaction.json')
    SEED_TIMEOUT = float(os.getenv('SEED_TIMEOUT', 30))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
