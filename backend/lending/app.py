import logging
import os

from lending.db.session import create_tables
from lending.main import create_app

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    try:
        create_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(
            "Error creating tables",
            extra={"context": {"error": str(e)}},
            exc_info=True,
        )

    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=os.getenv("FLASK_ENV") != "production")
