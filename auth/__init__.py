"""
auth — identifies the acting local user.

Provides:
  • signed user token creation & verification
  • ``get_current_user_id`` FastAPI dependency
"""
