# registrations/views/__init__.py
