# UI module for the Deep Work focus timer
from .tray import TrayController, create_app_icon

__all__ = ['TrayController', 'create_app_icon']
