"""
Classroom Bulk Downloader Entry Point

Run with: uvicorn bulk_downloader.main:app --reload --port 8000
Or: python main.py
"""

from bulk_downloader.main import app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("bulk_downloader.main:app", host="0.0.0.0", port=8000, reload=True)
