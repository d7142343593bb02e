"""AWS Rekognition implementation of the biometric index."""

import logging
from typing import List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from ..aws import error_code, make_client, translate_error
from ..errors import InvalidInput, ObjectNotFound, RemoteError
from ..face import BoundingBox, DetectedFace, FaceMatch, FaceRecord
from .base import DELETE_FACES_CEILING, BiometricIndex, sanitize_external_image_id

logger = logging.getLogger(__name__)

_NOT_FOUND = ('ResourceNotFoundException',)


class RekognitionIndex(BiometricIndex):
    """Face collections held by AWS Rekognition.

    Example:
        >>> index = RekognitionIndex(region='us-east-1')
        >>> index.ensure_collection(index.collection_id('carrera-2025'))
        >>> records = index.index_faces('carrera-2025', image_bytes, 'eventos/carrera-2025/original/a.jpg')
    """

    backend = "rekognition"

    def __init__(
        self,
        client=None,
        region: str = "us-east-1",
        timeout: float = 30.0,
        collection_prefix: str = "",
        max_pool_connections: int = 16
    ):
        """Initialize Rekognition index.

        Args:
            client: Pre-built boto3 Rekognition client
            region: AWS region
            timeout: Connect/read timeout in seconds
            collection_prefix: Prepended to event slugs
            max_pool_connections: HTTP pool size, at least the search worker count
        """
        super().__init__(collection_prefix=collection_prefix)
        self.client = client or make_client(
            "rekognition",
            region=region,
            timeout=timeout,
            max_pool_connections=max_pool_connections,
        )

    def _error(self, exc: Exception, operation: str, resource: Optional[str] = None) -> RemoteError:
        return translate_error(
            exc,
            backend=self.backend,
            operation=operation,
            not_found_codes=_NOT_FOUND,
            path=resource,
        )

    def create_collection(self, collection_id: str) -> bool:
        try:
            self.client.create_collection(CollectionId=collection_id)
        except ClientError as e:
            if error_code(e) == 'ResourceAlreadyExistsException':
                logger.debug(f"Collection {collection_id} already exists")
                return False
            raise self._error(e, "create_collection", collection_id) from e
        except BotoCoreError as e:
            raise self._error(e, "create_collection", collection_id) from e
        logger.info(f"Created collection {collection_id}")
        return True

    def delete_collection(self, collection_id: str) -> bool:
        try:
            self.client.delete_collection(CollectionId=collection_id)
        except (ClientError, BotoCoreError) as e:
            err = self._error(e, "delete_collection", collection_id)
            if isinstance(err, ObjectNotFound):
                logger.debug(f"Collection {collection_id} already gone")
                return False
            raise err from e
        logger.info(f"Deleted collection {collection_id}")
        return True

    def list_collections(self) -> List[str]:
        collections: List[str] = []
        try:
            paginator = self.client.get_paginator('list_collections')
            for page in paginator.paginate():
                collections.extend(page.get('CollectionIds', []) or [])
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "list_collections") from e
        return collections

    def index_faces(
        self,
        collection_id: str,
        image: bytes,
        external_image_id: Optional[str] = None,
        max_faces: int = 10,
        quality_filter: str = "AUTO"
    ) -> List[FaceRecord]:
        params = {
            'CollectionId': collection_id,
            'Image': {'Bytes': image},
            'MaxFaces': max_faces,
            'QualityFilter': quality_filter,
            'DetectionAttributes': [],
        }
        if external_image_id:
            params['ExternalImageId'] = sanitize_external_image_id(external_image_id)

        try:
            response = self.client.index_faces(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "index_faces", collection_id) from e

        records = []
        for rec in response.get('FaceRecords', []) or []:
            face = (rec or {}).get('Face') or {}
            records.append(FaceRecord(
                face_id=face.get('FaceId'),
                bbox=BoundingBox.from_dict(face.get('BoundingBox')),
                confidence=float(face.get('Confidence') or 0.0),
                external_image_id=face.get('ExternalImageId'),
            ))

        unindexed = len(response.get('UnindexedFaces', []) or [])
        if unindexed:
            logger.debug(f"{unindexed} faces filtered out by quality in {external_image_id}")
        return records

    def delete_faces(self, collection_id: str, face_ids: Sequence[str]) -> int:
        face_ids = list(face_ids)
        if not face_ids:
            return 0
        if len(face_ids) > DELETE_FACES_CEILING:
            raise InvalidInput(f"at most {DELETE_FACES_CEILING} face ids per call, got {len(face_ids)}")
        try:
            response = self.client.delete_faces(CollectionId=collection_id, FaceIds=face_ids)
        except (ClientError, BotoCoreError) as e:
            err = self._error(e, "delete_faces", collection_id)
            if isinstance(err, ObjectNotFound):
                return 0
            raise err from e
        return len(response.get('DeletedFaces', []) or [])

    def detect_faces(self, image: bytes) -> List[DetectedFace]:
        try:
            response = self.client.detect_faces(Image={'Bytes': image}, Attributes=['DEFAULT'])
        except (ClientError, BotoCoreError) as e:
            raise self._error(e, "detect_faces") from e

        faces = []
        for detail in response.get('FaceDetails', []) or []:
            bbox = BoundingBox.from_dict(detail.get('BoundingBox'))
            if bbox is None:
                continue
            faces.append(DetectedFace(bbox=bbox, confidence=float(detail.get('Confidence') or 0.0)))
        return faces

    def compare_faces(self, source: bytes, target: bytes, threshold: float) -> List[FaceMatch]:
        try:
            response = self.client.compare_faces(
                SourceImage={'Bytes': source},
                TargetImage={'Bytes': target},
                SimilarityThreshold=threshold,
            )
        except ClientError as e:
            # A target without any face is reported as InvalidParameterException
            if error_code(e) == 'InvalidParameterException':
                logger.debug(f"compare_faces: no comparable face ({e})")
                return []
            raise self._error(e, "compare_faces") from e
        except BotoCoreError as e:
            raise self._error(e, "compare_faces") from e

        return [
            FaceMatch(
                similarity=float(match.get('Similarity') or 0.0),
                bbox=BoundingBox.from_dict((match.get('Face') or {}).get('BoundingBox')),
            )
            for match in response.get('FaceMatches', []) or []
            if float(match.get('Similarity') or 0.0) >= threshold
        ]

    def search_faces_by_image(
        self,
        collection_id: str,
        image: bytes,
        threshold: float,
        max_faces: int = 1000
    ) -> List[FaceMatch]:
        try:
            response = self.client.search_faces_by_image(
                CollectionId=collection_id,
                Image={'Bytes': image},
                FaceMatchThreshold=threshold,
                MaxFaces=max_faces,
            )
        except ClientError as e:
            code = error_code(e)
            if code == 'InvalidParameterException':
                return []
            if code in _NOT_FOUND:
                logger.info(f"Collection {collection_id} does not exist, nothing to search")
                return []
            raise self._error(e, "search_faces_by_image", collection_id) from e
        except BotoCoreError as e:
            raise self._error(e, "search_faces_by_image", collection_id) from e

        matches = []
        for match in response.get('FaceMatches', []) or []:
            face = match.get('Face') or {}
            similarity = float(match.get('Similarity') or 0.0)
            if similarity < threshold or not face.get('FaceId'):
                continue
            matches.append(FaceMatch(
                similarity=similarity,
                bbox=BoundingBox.from_dict(face.get('BoundingBox')),
                face_id=face['FaceId'],
            ))
        return matches
