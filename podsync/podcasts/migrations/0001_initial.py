import uuid

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Podcast',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(blank=True, max_length=1000)),
                ('subtitle', models.TextField(blank=True)),
                ('link', models.URLField(blank=True, max_length=1000, null=True)),
                ('last_update', models.DateTimeField(blank=True, null=True)),
                ('created', models.DateTimeField(auto_now_add=True)),
                ('modified', models.DateTimeField(auto_now=True)),
                ('explicit', models.BooleanField(null=True)),
                ('url', models.URLField(max_length=2048, unique=True)),
                ('description', models.TextField(blank=True)),
                ('language', models.CharField(blank=True, max_length=10, null=True)),
                ('author', models.CharField(blank=True, max_length=350, null=True)),
                ('logo_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('optimized_logo_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('hub', models.URLField(blank=True, max_length=1000, null=True)),
                ('last_build_date', models.DateTimeField(blank=True, null=True)),
                ('latest_episode_timestamp', models.DateTimeField(blank=True, null=True)),
                ('episode_count', models.PositiveIntegerField(default=0)),
                ('has_parse_errors', models.BooleanField(db_index=True, default=False)),
                ('is_dead', models.BooleanField(db_index=True, default=False)),
            ],
            options={
                'ordering': ['title'],
            },
        ),
        migrations.CreateModel(
            name='Episode',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(blank=True, max_length=1000)),
                ('subtitle', models.TextField(blank=True)),
                ('link', models.URLField(blank=True, max_length=1000, null=True)),
                ('last_update', models.DateTimeField(blank=True, null=True)),
                ('created', models.DateTimeField(auto_now_add=True)),
                ('modified', models.DateTimeField(auto_now=True)),
                ('explicit', models.BooleanField(null=True)),
                ('guid', models.CharField(blank=True, max_length=2048, null=True)),
                ('enclosure_url', models.URLField(max_length=2048)),
                ('content', models.TextField(blank=True)),
                ('released', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('duration', models.PositiveIntegerField(blank=True, null=True)),
                ('filesize', models.BigIntegerField(blank=True, null=True)),
                ('mimetype', models.CharField(blank=True, max_length=100)),
                ('image_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('optimized_image_url', models.URLField(blank=True, max_length=1000, null=True)),
                ('podcast', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, to='podcasts.podcast')),
            ],
            options={
                'ordering': ['-released'],
            },
        ),
        migrations.AddIndex(
            model_name='episode',
            index=models.Index(fields=['podcast', 'released'], name='episode_podcast_released'),
        ),
        migrations.AddConstraint(
            model_name='episode',
            constraint=models.UniqueConstraint(condition=models.Q(('guid__isnull', False)), fields=('podcast', 'guid'), name='episode_unique_guid'),
        ),
        migrations.AddConstraint(
            model_name='episode',
            constraint=models.UniqueConstraint(fields=('podcast', 'enclosure_url'), name='episode_unique_enclosure'),
        ),
    ]
