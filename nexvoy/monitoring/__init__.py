# nexvoy/monitoring/__init__.py
