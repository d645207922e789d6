""" This module contains abstract models that are used in multiple apps """

import uuid

from django.db import models


class UUIDModel(models.Model):
    """ Models that have an UUID as primary key """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Meta:
        abstract = True


class UpdateInfoModel(models.Model):
    """ Model that keeps track of when it was created and updated """

    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class LastUpdateModel(models.Model):
    """ Model with timestamp of last update from its source """

    # date and time at which the model has last been updated from its source
    # (eg a podcast feed). None means that the object has been created as a
    # stub, without information from the source.
    last_update = models.DateTimeField(null=True, blank=True)

    class Meta:
        abstract = True


class TitleModel(models.Model):
    """ Model that has a title """

    title = models.CharField(max_length=1000, null=False, blank=True)
    subtitle = models.TextField(null=False, blank=True)

    def __str__(self):
        return self.title

    class Meta:
        abstract = True


class LinkModel(models.Model):
    """ Model that has a link """

    link = models.URLField(null=True, blank=True, max_length=1000)

    class Meta:
        abstract = True


class ExplicitModel(models.Model):
    # None means that the feed doesn't say
    explicit = models.BooleanField(null=True)

    class Meta:
        abstract = True
