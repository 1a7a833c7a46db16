from dotenv import load_dotenv
import os
load_dotenv()  # Load environment variables from .env file

from app import create_app

app = create_app()

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    host = os.environ.get('HOST', '0.0.0.0')
    debug = os.environ.get('DEBUG', 'True').lower() == 'true'

    # The reloader would start a second activity scheduler in the child process
    app.run(host=host, port=port, debug=debug, use_reloader=False)
