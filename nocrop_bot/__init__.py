"""Telegram (aiogram) front end for the no-crop core."""
