import os

# partsledger.db builds its engine at import time.
os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
os.environ.setdefault('LEDGER_RETRY_BACKOFF_SECONDS', '0')
