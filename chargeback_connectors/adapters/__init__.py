"""PMS vendor adapters"""
