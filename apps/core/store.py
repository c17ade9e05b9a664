"""
Cliente del document store.

Cada operación es un `Operation(collection, command, data)` con un comando
cerrado (`Command`) y devuelve un `StoreResult(success, data, error)`;
`DocumentStore.execute()` nunca lanza. Los helpers tipados (`find`,
`insert`, `update`...) lanzan `StoreError` para que las vistas respondan 500.

Filtros soportados (subconjunto estilo Mongo):
  - igualdad, con rutas con puntos ('items.id') que recorren listas
  - $or, $and, $in, $nin, $ne, $eq, $lt, $lte, $gt, $gte, $exists
Actualizaciones: claves planas o $set (rutas con puntos), $push, $inc, $unset.

`update` modifica sólo el primer documento que coincide y lo hace de forma
atómica respecto a otros `update` del mismo backend, así que un filtro
condicional (`{'id': x, 'emailSent': {'$ne': True}}`) sirve para reclamar
un envío una sola vez.
"""
import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum

from django.db import transaction

from .errors import StoreError

logger = logging.getLogger(__name__)


class Command(str, Enum):
    CREATE = '--create'
    READ = '--read'
    UPDATE = '--update'
    UPSERT = '--upsert'
    DELETE = '--delete'


@dataclass(frozen=True)
class Operation:
    collection: str
    command: Command
    data: dict = field(default_factory=dict)
    database: str = ''


@dataclass
class StoreResult:
    success: bool
    data: object = None
    error: str = ''


# ---------------------------------------------------------------------------
# Evaluación de filtros y actualizaciones
# ---------------------------------------------------------------------------

_MISSING = object()


def _resolve(value, parts):
    """Valores alcanzables por la ruta; las listas intermedias se aplanan."""
    if not parts:
        return [value]
    if isinstance(value, list):
        found = []
        for element in value:
            found.extend(_resolve(element, parts))
        return found
    if not isinstance(value, dict):
        return []
    head, rest = parts[0], parts[1:]
    if head not in value:
        return []
    return _resolve(value[head], rest)


def _same(left, right):
    # True == 1 en Python; en los filtros un booleano sólo iguala a otro booleano
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right
    return left == right


def _equals(values, target):
    if not values:
        return target is None
    for value in values:
        if _same(value, target):
            return True
        if isinstance(value, list) and not isinstance(target, list):
            if any(_same(element, target) for element in value):
                return True
    return False


def _comparable(left, right):
    numbers = (int, float)
    if isinstance(left, bool) or isinstance(right, bool):
        return False
    if isinstance(left, numbers) and isinstance(right, numbers):
        return True
    return isinstance(left, str) and isinstance(right, str)


_COMPARATORS = {
    '$lt': lambda a, b: a < b,
    '$lte': lambda a, b: a <= b,
    '$gt': lambda a, b: a > b,
    '$gte': lambda a, b: a >= b,
}


def _flatten(values):
    flat = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


def _check(values, condition):
    is_operator = isinstance(condition, dict) and condition and all(
        str(key).startswith('$') for key in condition
    )
    if not is_operator:
        return _equals(values, condition)

    for operator, target in condition.items():
        if operator == '$eq':
            ok = _equals(values, target)
        elif operator == '$ne':
            ok = not _equals(values, target)
        elif operator == '$in':
            ok = any(_equals(values, option) for option in target)
        elif operator == '$nin':
            ok = not any(_equals(values, option) for option in target)
        elif operator == '$exists':
            ok = bool(values) == bool(target)
        elif operator in _COMPARATORS:
            compare = _COMPARATORS[operator]
            ok = any(
                compare(value, target)
                for value in _flatten(values)
                if _comparable(value, target)
            )
        else:
            raise ValueError(f"Operador no soportado: {operator}")
        if not ok:
            return False
    return True


def matches(document, query) -> bool:
    for key, condition in (query or {}).items():
        if key == '$or':
            if not any(matches(document, sub) for sub in condition):
                return False
        elif key == '$and':
            if not all(matches(document, sub) for sub in condition):
                return False
        elif not _check(_resolve(document, key.split('.')), condition):
            return False
    return True


def _container(document, path, create=True):
    parts = path.split('.')
    target = document
    for part in parts[:-1]:
        nxt = target.get(part, _MISSING)
        if not isinstance(nxt, dict):
            if not create:
                return None, parts[-1]
            nxt = target[part] = {}
        target = nxt
    return target, parts[-1]


def apply_update(document, update):
    """Aplica `update` sobre `document` (in place) y lo devuelve."""
    if not any(str(key).startswith('$') for key in update):
        update = {'$set': update}

    for operator, changes in update.items():
        for path, value in (changes or {}).items():
            if operator == '$set':
                target, key = _container(document, path)
                target[key] = copy.deepcopy(value)
            elif operator == '$unset':
                target, key = _container(document, path, create=False)
                if target is not None:
                    target.pop(key, None)
            elif operator == '$push':
                target, key = _container(document, path)
                current = target.get(key)
                if not isinstance(current, list):
                    current = target[key] = []
                current.append(copy.deepcopy(value))
            elif operator == '$inc':
                target, key = _container(document, path)
                current = target.get(key)
                if isinstance(current, bool) or not isinstance(current, (int, float)):
                    current = 0
                target[key] = current + value
            else:
                raise ValueError(f"Operador de actualización no soportado: {operator}")
    return document


def _seed_from_filter(query):
    """Campos de igualdad del filtro, base del documento en un upsert."""
    seed = {}
    for key, value in (query or {}).items():
        if key.startswith('$'):
            continue
        if isinstance(value, dict) and any(str(k).startswith('$') for k in value):
            continue
        target, leaf = _container(seed, key)
        target[leaf] = copy.deepcopy(value)
    return seed


# ---------------------------------------------------------------------------
# Interfaz común
# ---------------------------------------------------------------------------

class DocumentStore:
    """Base de los backends. Subclases implementan los `_create`, `_read`..."""

    def __init__(self, database='storefront'):
        self.database = database

    def execute(self, operation: Operation) -> StoreResult:
        handlers = {
            Command.CREATE: self._do_create,
            Command.READ: self._do_read,
            Command.UPDATE: self._do_update,
            Command.UPSERT: self._do_upsert,
            Command.DELETE: self._do_delete,
        }
        try:
            command = Command(operation.command)
            data = handlers[command](operation.database or self.database, operation.collection, operation.data or {})
        except Exception as exc:
            logger.exception(
                "Document store: fallo %s en %s", operation.command, operation.collection,
            )
            return StoreResult(success=False, error=str(exc) or exc.__class__.__name__)
        return StoreResult(success=True, data=data)

    def _do_create(self, database, collection, data):
        document = copy.deepcopy(data)
        document.setdefault('_id', uuid.uuid4().hex)
        return self._create(database, collection, document)

    def _do_read(self, database, collection, data):
        return self._read(database, collection, data)

    def _do_update(self, database, collection, data):
        return self._update(database, collection, data.get('filter') or {}, data.get('update') or {})

    def _do_upsert(self, database, collection, data):
        return self._upsert(database, collection, data.get('filter') or {}, data.get('update') or {})

    def _do_delete(self, database, collection, data):
        return self._delete(database, collection, data.get('filter') or data)

    # -- Helpers tipados ----------------------------------------------------

    def _run(self, collection, command, data):
        result = self.execute(Operation(collection=collection, command=command, data=data))
        if not result.success:
            raise StoreError(result.error)
        return result.data

    def insert(self, collection, document) -> dict:
        return self._run(collection, Command.CREATE, document)

    def find(self, collection, query=None) -> list:
        return self._run(collection, Command.READ, query or {})

    def find_one(self, collection, query):
        found = self.find(collection, query)
        return found[0] if found else None

    def count(self, collection, query=None) -> int:
        return len(self.find(collection, query))

    def update(self, collection, query, changes) -> int:
        """Actualiza el primer documento que coincide; devuelve cuántos coincidieron (0/1)."""
        result = self._run(collection, Command.UPDATE, {'filter': query, 'update': changes})
        return result['matched']

    def upsert(self, collection, query, changes) -> dict:
        return self._run(collection, Command.UPSERT, {'filter': query, 'update': changes})

    def delete(self, collection, query) -> int:
        result = self._run(collection, Command.DELETE, {'filter': query})
        return result['deleted']

    # -- Backend ------------------------------------------------------------

    def _create(self, database, collection, document):
        raise NotImplementedError

    def _read(self, database, collection, query):
        raise NotImplementedError

    def _update(self, database, collection, query, changes):
        raise NotImplementedError

    def _upsert(self, database, collection, query, changes):
        raise NotImplementedError

    def _delete(self, database, collection, query):
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Backend en memoria (tests, desarrollo local)
# ---------------------------------------------------------------------------

class MemoryDocumentStore(DocumentStore):

    def __init__(self, database='storefront'):
        super().__init__(database)
        self._lock = threading.Lock()
        self._collections = {}

    def _bucket(self, database, collection):
        return self._collections.setdefault((database, collection), [])

    def _create(self, database, collection, document):
        with self._lock:
            self._bucket(database, collection).append(document)
            return copy.deepcopy(document)

    def _read(self, database, collection, query):
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._bucket(database, collection)
                if matches(doc, query)
            ]

    def _update(self, database, collection, query, changes):
        with self._lock:
            for doc in self._bucket(database, collection):
                if matches(doc, query):
                    apply_update(doc, changes)
                    return {'matched': 1, 'modified': 1}
            return {'matched': 0, 'modified': 0}

    def _upsert(self, database, collection, query, changes):
        with self._lock:
            bucket = self._bucket(database, collection)
            for doc in bucket:
                if matches(doc, query):
                    apply_update(doc, changes)
                    return {'matched': 1, 'upserted': False}
            document = apply_update(_seed_from_filter(query), changes)
            document.setdefault('_id', uuid.uuid4().hex)
            bucket.append(document)
            return {'matched': 0, 'upserted': True}

    def _delete(self, database, collection, query):
        with self._lock:
            bucket = self._bucket(database, collection)
            for index, doc in enumerate(bucket):
                if matches(doc, query):
                    del bucket[index]
                    return {'deleted': 1}
            return {'deleted': 0}


# ---------------------------------------------------------------------------
# Backend Django ORM (tabla core_document con JSONField)
# ---------------------------------------------------------------------------

class ModelDocumentStore(DocumentStore):
    """
    Persiste cada documento como una fila `Document`. Los filtros de igualdad
    de primer nivel con valor string se delegan a la BD (`data__key=valor`);
    el resto del filtro se evalúa en Python sobre los candidatos.
    """

    def _queryset(self, database, collection, query):
        from .models import Document

        qs = Document.objects.filter(database=database, collection=collection)
        for key, value in (query or {}).items():
            if key.startswith('$') or '.' in key or not isinstance(value, str):
                continue
            qs = qs.filter(**{f'data__{key}': value})
        return qs.order_by('id')

    def _create(self, database, collection, document):
        from .models import Document

        Document.objects.create(database=database, collection=collection, data=document)
        return copy.deepcopy(document)

    def _read(self, database, collection, query):
        return [
            row.data
            for row in self._queryset(database, collection, query)
            if matches(row.data, query)
        ]

    def _first_locked(self, database, collection, query):
        for row in self._queryset(database, collection, query).select_for_update():
            if matches(row.data, query):
                return row
        return None

    def _update(self, database, collection, query, changes):
        with transaction.atomic():
            row = self._first_locked(database, collection, query)
            if row is None:
                return {'matched': 0, 'modified': 0}
            row.data = apply_update(row.data, changes)
            row.save(update_fields=['data', 'updated_at'])
            return {'matched': 1, 'modified': 1}

    def _upsert(self, database, collection, query, changes):
        from .models import Document

        with transaction.atomic():
            row = self._first_locked(database, collection, query)
            if row is not None:
                row.data = apply_update(row.data, changes)
                row.save(update_fields=['data', 'updated_at'])
                return {'matched': 1, 'upserted': False}
            document = apply_update(_seed_from_filter(query), changes)
            document.setdefault('_id', uuid.uuid4().hex)
            Document.objects.create(database=database, collection=collection, data=document)
            return {'matched': 0, 'upserted': True}

    def _delete(self, database, collection, query):
        with transaction.atomic():
            row = self._first_locked(database, collection, query)
            if row is None:
                return {'deleted': 0}
            row.delete()
            return {'deleted': 1}


def build_store(backend='model', database='storefront') -> DocumentStore:
    backends = {
        'model': ModelDocumentStore,
        'memory': MemoryDocumentStore,
    }
    try:
        store_class = backends[backend]
    except KeyError:
        raise ValueError(f"DOCUMENT_STORE_BACKEND desconocido: {backend!r}") from None
    return store_class(database=database)
