"""
WSGI Entry Point for AppBase.
"""

from appbase.app import create_app

application = create_app()
app = application

if __name__ == "__main__":
    application.run()
