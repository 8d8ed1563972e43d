"""callcrm - VoIP caller CRM webhook and real-time call correlation service"""

__version__ = "1.0.0"
