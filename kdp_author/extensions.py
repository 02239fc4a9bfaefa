from flask_wtf.csrf import CSRFProtect

from .manuscript import ManuscriptStore

csrf = CSRFProtect()
manuscripts = ManuscriptStore()
