from importlib import import_module

modules = [
    'auth',
    'requests',
    'study_ids',
    'notifications',
    'admin_users',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
