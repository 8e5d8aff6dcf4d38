# nexvoy/services/__init__.py
