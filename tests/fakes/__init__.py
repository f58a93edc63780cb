"""Test doubles for transports, clocks and stores."""
