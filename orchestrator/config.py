import os


def _game_types(raw: str) -> tuple:
    return tuple(t.strip() for t in raw.split(',') if t.strip())


class Config:
    # Dependencies
    AUTH_SERVICE_URL = os.getenv('AUTH_SERVICE_URL', 'http://localhost:3001')
    TOURNAMENT_SERVICE_URL = os.getenv('TOURNAMENT_SERVICE_URL', 'http://localhost:5000')
    REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', '10'))

    # Automation principal
    SYSTEM_USER_IDENTIFIER = os.getenv('SYSTEM_USER_IDENTIFIER', 'system@gamingtournament.com')
    SYSTEM_USER_PASSWORD = os.getenv('SYSTEM_USER_PASSWORD', '')

    # Task intervals (minutes)
    AUTOMATED_TOURNAMENT_INTERVAL = int(os.getenv('AUTOMATED_TOURNAMENT_INTERVAL', '30'))
    STATUS_UPDATE_INTERVAL = int(os.getenv('STATUS_UPDATE_INTERVAL', '5'))
    HEALTH_CHECK_INTERVAL = int(os.getenv('HEALTH_CHECK_INTERVAL', '10'))

    # Automated tournament timing (minutes relative to start)
    TOURNAMENT_DURATION_MINUTES = int(os.getenv('TOURNAMENT_DURATION_MINUTES', '120'))
    REGISTRATION_LEAD_MINUTES = int(os.getenv('REGISTRATION_LEAD_MINUTES', '15'))
    CHECK_IN_LEAD_MINUTES = int(os.getenv('CHECK_IN_LEAD_MINUTES', '5'))

    AUTOMATED_GAME_TYPES = _game_types(
        os.getenv('AUTOMATED_GAME_TYPES', 'BR_MATCH,CLASH_SQUAD,LONE_WOLF,CS_2_VS_2')
    )

    # Status advancement batch bounds
    STATUS_UPDATE_PAGE_SIZE = int(os.getenv('STATUS_UPDATE_PAGE_SIZE', '100'))
    STATUS_UPDATE_MAX_PAGES = int(os.getenv('STATUS_UPDATE_MAX_PAGES', '10'))

    # Run a generation batch as soon as the scheduler starts
    RUN_GENERATION_ON_START = os.getenv('RUN_GENERATION_ON_START', 'true').lower() == 'true'


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    DEBUG = False
    AUTH_SERVICE_URL = 'http://auth.test'
    TOURNAMENT_SERVICE_URL = 'http://tournaments.test'
    SYSTEM_USER_IDENTIFIER = 'system@tournaments.test'
    SYSTEM_USER_PASSWORD = 'test-password'
    REQUEST_TIMEOUT = 1.0
    AUTOMATED_GAME_TYPES = ('BR_MATCH', 'CLASH_SQUAD', 'LONE_WOLF', 'CS_2_VS_2')
    RUN_GENERATION_ON_START = False


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
