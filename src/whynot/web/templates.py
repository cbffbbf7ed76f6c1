from pathlib import Path

from fastapi.templating import Jinja2Templates

# Shipped inside the package: src/whynot/web/templates
TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
