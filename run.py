"""
Application entry point.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from budgetprice import create_app
from budgetprice.utils.logger import get_logger

logger = get_logger(__name__)

app = create_app()

if __name__ == '__main__':
    logger.info("Starting Flask application")
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', '5000')), debug=False)
