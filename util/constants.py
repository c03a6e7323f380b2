# util/constants.py
class InternalURIs:
    API = "/api"
    V1 = API + "/v1"
    JOBS = V1 + "/jobs"
    JOB_STATS = JOBS + "/stats"
    JOB_DETAIL = JOBS + "/{job_id}"
    JOB_PROGRESS = JOBS + "/{job_id}/progress"
    BLOBS = V1 + "/blobs"
    BLOB_STATS = BLOBS + "/stats"
    BLOB_CONTENT = BLOBS + "/{storage_id}"
    BLOB_INFO = BLOBS + "/{storage_id}/info"


class ExternalURIs:
    GOOGLE_DRIVE_FILE = "/files/{file_id}"


JOB_TYPE_GOOGLE_DRIVE = "google_drive_download"
SOURCE_GOOGLE_DRIVE = "googledrive"
DEFAULT_MIME_TYPE = "application/octet-stream"
