"""Agent-side clients for the real-time call channel"""
