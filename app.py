import os

from media_pipeline import create_app

app = create_app()

if __name__ == '__main__':
    app.run(debug=True, port=int(os.getenv('PORT', '5000')))
