"""
Application-wide constants for Campus Bites
"""

# Campus Locations (posts must use one of these)
CAMPUS_LOCATIONS = ['South Campus', 'North Campus', 'East Campus', 'West Campus']

# Reservation Configuration
RESERVATION_STATUS_RESERVED = 'reserved'  # Only status in use; cancel deletes the row

# Storage Buckets
FOOD_IMAGES_BUCKET = 'food_pictures'    # Post images, one uniquely named object per upload
AVATAR_BUCKET = 'profile-images'        # Avatars, fixed slot {user_id}/avatar.{ext}

# File Upload Configuration
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp', 'gif'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/png', 'image/jpg', 'image/webp', 'image/gif'}
DEFAULT_IMAGE_EXTENSION = 'jpg'
IMAGE_CACHE_CONTROL = 'max-age=3600'

# Input Validation
MIN_QUANTITY = 1
MAX_QUANTITY = 1000
MAX_TITLE_LENGTH = 120
MAX_LOCATION_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_NICKNAME_LENGTH = 50
MAX_EMAIL_LENGTH = 120
MIN_PASSWORD_LENGTH = 8
MAX_ROW_ID = 2 ** 63 - 1  # Largest signed 64-bit integer the database can store

# Rate Limiting (requests per time period)
RATE_LIMIT_DEFAULT = ["200 per day", "50 per hour"]
RATE_LIMIT_LOGIN = "5 per minute"
RATE_LIMIT_REGISTER = "3 per hour"
RATE_LIMIT_RESERVE = "30 per minute"
