import uuid

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('podcasts', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='FeedSyncResult',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('podcast_url', models.URLField(max_length=2048)),
                ('trigger', models.CharField(choices=[('push', 'push'), ('pull', 'pull'), ('manual', 'manual')], default='pull', max_length=6)),
                ('start', models.DateTimeField(default=django.utils.timezone.now)),
                ('duration', models.DurationField()),
                ('successful', models.BooleanField()),
                ('status', models.CharField(choices=[('updated', 'updated'), ('skipped', 'skipped'), ('parse-error', 'parse error'), ('error', 'error')], default='updated', max_length=11)),
                ('error_message', models.TextField(blank=True)),
                ('podcast_created', models.BooleanField(default=False)),
                ('episodes_added', models.IntegerField(default=0)),
                ('episodes_updated', models.IntegerField(default=0)),
                ('podcast', models.ForeignKey(null=True, on_delete=django.db.models.deletion.CASCADE, to='podcasts.podcast')),
            ],
            options={
                'ordering': ['-start'],
                'get_latest_by': 'start',
            },
        ),
        migrations.AddIndex(
            model_name='feedsyncresult',
            index=models.Index(fields=['podcast', 'start'], name='feedsync_podcast_start'),
        ),
    ]
