# riskgate - activity risk scoring and fraud alerting
__version__ = "1.0.0"
