# votingflow/config.py

import os
from datetime import timedelta

# Settings are read from the environment once, when the module is imported.

# Placeholder administrator used when ADMIN_IDENTITY is not set
DEFAULT_ADMIN_IDENTITY = '0x' + '0' * 39 + '1'


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me-in-production')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'change-me-in-production-jwt')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=int(os.environ.get('JWT_ACCESS_TOKEN_EXPIRES', '30')))
    JWT_TOKEN_LOCATION = ['headers']

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///votingflow.sqlite')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL', 'memory://')
    VOTE_RATE_LIMIT = os.environ.get('VOTE_RATE_LIMIT', '30/minute')

    ADMIN_IDENTITY = os.environ.get('ADMIN_IDENTITY', DEFAULT_ADMIN_IDENTITY).lower()
    AUDIT_LOG_DIR = os.environ.get('AUDIT_LOG_DIR', 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test'
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'
    LOG_LEVEL = 'DEBUG'
