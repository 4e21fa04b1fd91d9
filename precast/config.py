from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./budgets.db"
    COMPANY_NAME: str = "Precast Structures"
    LOG_LEVEL: str = "INFO"

    # Tokens are minted by the identity service; this app only verifies them
    JWT_SECRET: str = ""  # Required in production; auth fails loudly when empty
    JWT_ALGORITHM: str = "HS256"

    # Budget wizard
    WIZARD_STEPS: int = 6
    MANDATORY_STEPS: list[int] = [1, 2, 3, 4, 5]

    # Escalation
    FORMULA_SUM_TOLERANCE: float = 0.01

    # Assembly surcharges (per day, ARS)
    ASSEMBLY_DAY_RATE: float = 45000.0
    CRANE_DAY_RATE: float = 60000.0

    class Config:
        env_file = ".env"


settings = Settings()
