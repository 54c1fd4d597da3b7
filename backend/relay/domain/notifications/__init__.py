"""Notification domain: feed notifications and the /notifications socket namespace."""
