import sys

from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()


def main():
    from riasec_engine.config import settings

    print("Starting RIASEC Assessment Engine...")
    print(f"Server: http://{settings.HOST}:{settings.PORT}")
    print(f"API Docs: http://{settings.HOST}:{settings.PORT}/docs")
    print("=" * 50)

    try:
        import uvicorn

        uvicorn.run(
            "riasec_engine.main:app",
            host=settings.HOST,
            port=settings.PORT,
            reload=settings.RELOAD,
            log_level=settings.LOG_LEVEL.lower()
        )

    except ImportError as e:
        print(f"Import error: {e}")
        print("Install the package first: pip install -e .")
        sys.exit(1)


if __name__ == "__main__":
    main()
