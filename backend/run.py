"""
Mission Control Backend Runner
Run with: python run.py
"""

import uvicorn
from mission_control.config import settings


if __name__ == "__main__":
    print(f"""
    Mission Control

    Starting server at http://{settings.HOST}:{settings.PORT}

    API Documentation: http://localhost:{settings.PORT}/docs
    """)

    uvicorn.run(
        "mission_control.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
