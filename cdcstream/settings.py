"""
Django settings for the cdcstream project.

Every external endpoint (Kafka Connect, brokers, Prometheus) is read from the
environment so the same image runs on a laptop and inside the compose network.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'cdcstream-insecure-dev-key')
DEBUG = os.environ.get('DJANGO_DEBUG', 'true').lower() == 'true'
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'pipelines',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'cdcstream.urls'
WSGI_APPLICATION = 'cdcstream.wsgi.application'

# ====================================
# DATABASE
# ====================================
if os.environ.get('DB_ENGINE', 'sqlite') == 'postgresql':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ.get('DB_NAME', 'cdcstream'),
            'USER': os.environ.get('DB_USER', 'postgres'),
            'PASSWORD': os.environ.get('DB_PASSWORD', ''),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'

# ====================================
# KAFKA CONNECT / DEBEZIUM
# ====================================
DEBEZIUM_CONFIG = {
    'KAFKA_CONNECT_URL': os.environ.get('KAFKA_CONNECT_URL', 'http://localhost:8083'),
    'KAFKA_BOOTSTRAP_SERVERS': os.environ.get('KAFKA_BOOTSTRAP_SERVERS', 'localhost:9092'),
    # Address the connectors themselves use from inside the cluster network
    'KAFKA_INTERNAL_SERVERS': os.environ.get('KAFKA_INTERNAL_SERVERS', 'kafka:9092'),
    'IN_CLUSTER_HOSTS': {
        'postgres': os.environ.get('PG_INTERNAL_HOST', 'pg-debezium'),
        'oracle': os.environ.get('ORACLE_INTERNAL_HOST', 'oracle-xe'),
        'mysql': os.environ.get('MYSQL_INTERNAL_HOST', 'mysql'),
    },
    'REQUEST_TIMEOUT': int(os.environ.get('KAFKA_CONNECT_TIMEOUT', '30')),
    'STATUS_TIMEOUT': int(os.environ.get('KAFKA_CONNECT_STATUS_TIMEOUT', '3')),
    'TOPIC_DISCOVERY': {
        'INITIAL_DELAY': float(os.environ.get('TOPIC_DISCOVERY_INITIAL_DELAY', '1.0')),
        'BACKOFF_FACTOR': float(os.environ.get('TOPIC_DISCOVERY_BACKOFF', '2.0')),
        'MAX_ATTEMPTS': int(os.environ.get('TOPIC_DISCOVERY_MAX_ATTEMPTS', '5')),
    },
}

# Applied to every topic a source connector materializes
KAFKA_TOPIC_CONFIG = {
    'cleanup.policy': 'compact',
    'delete.retention.ms': '100',
}

# ====================================
# PROMETHEUS
# ====================================
PROMETHEUS_CONFIG = {
    'URL': os.environ.get('PROMETHEUS_URL', 'http://localhost:9090'),
    'TIMEOUT': int(os.environ.get('PROMETHEUS_TIMEOUT', '5')),
}

# ====================================
# MONITORING ENGINE
# ====================================
MONITORING = {
    'MAX_CONCURRENT_PIPELINES': int(os.environ.get('MONITORING_MAX_CONCURRENCY', '4')),
    'CHECK_TIMEOUT_SECONDS': int(os.environ.get('MONITORING_CHECK_TIMEOUT', '15')),
    'DEFAULT_THRESHOLDS': {
        'lag_ms': 5000,
        'throughput_drop_percent': 50,
        'error_rate_percent': 1,
        'dlq_count': 0,
        'check_interval_ms': 60000,
        'pause_duration_seconds': 5,
    },
}

# ====================================
# CELERY
# ====================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

# ====================================
# LOGGING
# ====================================
LOG_DIR = Path(os.environ.get('LOG_DIR', BASE_DIR / 'logs'))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
LOG_TO_FILE = os.environ.get('LOG_TO_FILE', 'false').lower() == 'true'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'pipelines': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'pipelines.monitoring': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'cdcstream.utils': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}

if LOG_TO_FILE:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    LOGGING['handlers']['file'] = {
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': str(LOG_DIR / 'cdcstream.log'),
        'maxBytes': 10 * 1024 * 1024,
        'backupCount': 5,
        'formatter': 'verbose',
    }
    for logger_config in LOGGING['loggers'].values():
        logger_config['handlers'].append('file')
