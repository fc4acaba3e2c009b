import os

# Must be set before ``repo``/``main`` are imported
os.environ.setdefault("SANDBOX_DATABASE_URL", "sqlite://")
os.environ.setdefault("SANDBOX_SECRET_KEY", "sk_test_sandbox")
os.environ.setdefault("SANDBOX_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SANDBOX_WEBHOOK_URL", "http://storefront.test/api/payments/webhook/")
