import firebase_admin
from firebase_admin import auth, credentials, exceptions

from donchat.core.config import Settings
from donchat.core.errors import AuthenticationError
from donchat.utils.logger import get_logger

logger = get_logger(__name__)


class FirebaseService:
    """Verifies Firebase ID tokens issued to the mobile client."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.app = self._initialize_firebase()

    def _initialize_firebase(self) -> firebase_admin.App:
        """Initialize Firebase Admin SDK"""
        try:
            # Reuse the default app if something already initialised it
            return firebase_admin.get_app()
        except ValueError:
            pass

        firebase_config = self.settings.firebase_service_account
        if firebase_config.get("private_key"):
            logger.info(f"Initialising Firebase for project {firebase_config.get('project_id')}")
            cred = credentials.Certificate(firebase_config)
            return firebase_admin.initialize_app(cred)

        # Application default credentials (GCP or the Firebase emulator)
        logger.info("Initialising Firebase with application default credentials")
        return firebase_admin.initialize_app()

    def verify_token(self, token: str) -> dict:
        """Verify Firebase ID token"""
        try:
            decoded_token = auth.verify_id_token(token, app=self.app)
        except (ValueError, exceptions.FirebaseError) as exc:
            logger.warning(f"Invalid Firebase token: {exc}")
            raise AuthenticationError() from exc

        return {
            "uid": decoded_token["uid"],
            "phone_number": decoded_token.get("phone_number"),
            "email": decoded_token.get("email"),
            "verified": True,
        }

    def verify(self, token: str) -> str:
        return self.verify_token(token)["uid"]
