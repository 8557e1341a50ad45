"""cvmdeploy - confidential VM deployment with encrypted secrets"""

__version__ = "1.0.0"
